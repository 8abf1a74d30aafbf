# setup.py
from setuptools import setup, find_packages

setup(
    name="quantix",
    version="0.1.0",
    packages=find_packages(include=["quantix", "quantix.*"]),
    python_requires=">=3.9",
    install_requires=[
        "msgpack",            # state records, signing payloads
        "plyvel",             # LevelDB ledger
        "cryptography",       # ECDSA keys and signatures
        "pycryptodome",       # keccak
        "prometheus_client",  # metrics
        "psutil",             # monitoring
        "requests",           # HTTP price feed
    ],
    extras_require={
        "test": ["pytest"],
    },
)
