from setuptools import find_packages, setup

setup(
    name="dircol",
    version="0.1.0",
    description="Direct collocation trajectory optimization with adaptive mesh refinement",
    author="dircol Authors",
    packages=find_packages(include=["dircol", "dircol.*"]),
    install_requires=[
        "numpy>=1.24.0",
        "scipy>=1.10.0",
        "casadi>=3.6.0",  # Symbolic dynamics oracles
        "cyipopt>=1.3.0",  # IPOPT interior-point NLP backend
        "pandas>=1.5.0",  # Used for data export
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Mathematics",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    keywords="optimal control, trajectory optimization, direct collocation, finite differences",
)
