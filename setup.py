"""Setup script for the RBI cache service."""

from setuptools import setup, find_namespace_packages

setup(
    name="rbi-cache",
    version="1.0.0",
    description="HTTP response caching and rate limiting for FastAPI services",
    python_requires=">=3.11",
    packages=find_namespace_packages(include=["rbicache", "rbicache.*"]),
    install_requires=[
        "fastapi>=0.110",
        "starlette>=0.36",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "anyio>=4.0",
        "uvicorn>=0.27",
        "python-dotenv>=1.0",
        "orjson>=3.9",
        "redis>=5.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "httpx>=0.27",
        ],
    },
)
