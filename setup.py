from setuptools import setup, find_packages

setup(
    name="vault-search",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy>=1.24",
        "pyyaml",
        "tqdm>=4.60",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "vault-search=vault_search.kb.cli:main",
        ],
    },
    python_requires=">=3.10",
    author="Uday Kanth",
    description="Local semantic and keyword search over a Markdown vault.",
)
