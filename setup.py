from setuptools import setup, find_namespace_packages

setup(
    name="veil",
    version="0.1.0",
    author="Veil Research Team",
    description="Veil - confidential token and sealed-bid NFT auction runtime over encrypted values",
    packages=find_namespace_packages(include=["veil", "veil.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Security :: Cryptography",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.11",
    install_requires=[
        "py-ecc>=6.0.0",
        "pycryptodome>=3.19.0",
        "pydantic>=2.5.0",
        "click>=8.1.0",
        "python-dotenv>=1.0.0",
        "colorlog>=6.7.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "veil=veil.cli.main:cli",
        ],
    },
)
