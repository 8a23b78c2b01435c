from setuptools import setup, find_packages

setup(
    name="clinical-interop-gateway",
    version="1.0.0",
    packages=find_packages(include=["interop_gateway", "interop_gateway.*"]),
    python_requires=">=3.9",
    install_requires=[
        "fastapi",
        "uvicorn",
        "pydantic>=2",
        "python-dotenv",
        "httpx",
        "anyio",
        "sqlalchemy[asyncio]>=2.0",
        "aiosqlite",
        "hl7",
    ],
    extras_require={
        "postgres": ["asyncpg"],
        "test": ["pytest", "anyio", "httpx"],
    },
)
