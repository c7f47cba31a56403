# setup.py
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="ecomodels", # Название пакета, которое будет использоваться при pip install
    version="0.1.0",
    author="Ваше Имя",
    author_email="ogletix@gmail.com",
    description="Species distribution models (GLM) and NDVI time-series models",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "examples"]),
    install_requires=[
        "numpy>=1.20.0",
        "pandas>=1.3.0",
        "rasterio>=1.2.0",
        "scipy>=1.7.0",
        "scikit-learn>=1.0.0",
        "statsmodels>=0.13.0",
        "matplotlib>=3.5.0",
        "pillow>=8.0.0",
        "pyproj>=3.0.0",
        "contextily>=1.2.0",
        "requests>=2.25.0",
        "urllib3>=1.26.0",
    ],
    extras_require={
        "tests": ["pytest>=7.0"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Topic :: Scientific/Engineering :: GIS",
        "Intended Audience :: Science/Research",
    ],
    python_requires=">=3.8",
    entry_points={
        'console_scripts': [
            'ecomodels=ecomodels.cli.ecomodels_cli:main',
        ],
    },
)
