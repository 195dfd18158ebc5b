from setuptools import setup, find_packages

setup(
    name="ecosim",
    version="0.1.0",
    description="Ecotype formation, periodic selection and ecotype count estimation from sequence binning curves",
    packages=find_packages(where="ecosim"),
    package_dir={"": "ecosim"},
    install_requires=[
        "numpy>=1.24",
        "scipy>=1.10",
        "treeswift>=1.1",
    ],
    extras_require={
        "dev": ["pytest>=7.4"],
    },
    entry_points={
        "console_scripts": [
            "ecosim=ecosim.cli:main",
        ],
    },
)
