from setuptools import setup, find_packages

setup(
    name="territory_control_backend",
    version="0.1",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main", "models", "config"],
    python_requires=">=3.9",
    install_requires=[
        "fastapi>=0.111.0",
        "uvicorn[standard]>=0.30.0",
        "pydantic>=2.7.0",
        "pydantic-settings>=2.2.0",
        "pandas>=2.2.0",
        "numpy>=1.26.0",
        "requests>=2.31.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "httpx>=0.27.0",
        ],
    },
)
