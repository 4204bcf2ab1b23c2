from setuptools import setup, find_packages

setup(
    name="infra-discovery",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "aiohttp>=3.9.0",
        "cryptography>=41.0.0",
        "ldap3>=2.9",
        "pydantic>=2.5.0",
        "pywinrm>=0.4.3",
        "pyyaml>=6.0",
        "requests>=2.28",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "infra-discovery=infra_discovery.cli:main",
        ],
    },
    python_requires=">=3.11",
)
