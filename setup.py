from setuptools import setup, find_namespace_packages

setup(
    name="abcore-experimentation",
    version="1.0.0",
    packages=find_namespace_packages(include=["src.abcore", "src.abcore.*"]),
    python_requires=">=3.8",
    install_requires=[
        "pandas>=1.5.0",
        "numpy>=1.21.0",
        "scipy>=1.7.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
)
