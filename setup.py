from setuptools import setup, find_namespace_packages

setup(
    name="store-basket-analytics",
    version="0.1.0",
    author="Khairuddin Nasty",
    description="Geographic store selection and SKU association rule mining on Spark",
    packages=find_namespace_packages(include=["src", "src.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pyspark>=3.4",
        "pandas>=1.5",
        "pyarrow>=10.0",
        "numpy>=1.23",
        "scikit-learn>=1.2",
        "kmedoids>=0.5",
        "loguru>=0.7",
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "python-dotenv>=1.0",
        "prometheus-client>=0.17",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "store-basket-pipeline=src.pipeline.main:main",
        ],
    },
)
