from setuptools import setup, find_packages
setup(
    name="dealforge_lookup",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages("src"),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "httpx>=0.24,<0.28",
        "pydantic>=2",
        "shapely>=2",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'dealforge_lookup=dealforge_lookup.__main__:_safe_main'
        ]
    }
)
