from setuptools import find_packages, setup

setup(
    name="jaxlin",
    version="0.0",
    description="Autodiff linearization of expression factors in Jax",
    url="http://github.com/brentyi/jaxlin",
    author="brentyi",
    author_email="brentyi@berkeley.edu",
    license="BSD",
    packages=find_packages("src"),
    package_dir={"": "src"},
    package_data={"jaxlin": ["py.typed"]},
    python_requires=">=3.11",
    install_requires=[
        "tyro",
        "frozendict",
        "jax>=0.4.20",
        "jaxlib",
        "jaxlie>=1.3.0",
        "jax_dataclasses>=1.6.0",
        "loguru",
        "numpy",
        "overrides",
        "rich",
        "termcolor",
    ],
    extras_require={
        "testing": [
            "pytest",
            "pytest-cov",
        ],
        "type-checking": [
            "mypy",
            "types-termcolor",
        ],
    },
)
