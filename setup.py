"""Setup configuration for deliveryspeed"""

from setuptools import setup, find_packages

setup(
    name="github-delivery-speed",
    version="0.1.0",
    description=(
        "CLI tool comparing GitHub pull request delivery speed across two "
        "periods: cycle time, review time and change size."
    ),
    author="GitHub Delivery Speed Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "github-delivery-speed=deliveryspeed.main:main",
        ],
    },
)
