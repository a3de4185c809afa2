#!/usr/bin/env python3

from setuptools import setup, find_packages
import os

directory = os.path.dirname(os.path.realpath(__file__))


if __name__ == "__main__":
    setup(
        name="nodeflow",
        packages=find_packages(include=["nodeflow", "nodeflow.*"]),
        python_requires='>=3.10',
        version="0.1.0",
        license="MIT",
        description="Visual node-graph editor that compiles flows into PowerShell scripts",
        author="mirmik",
        author_email="mirmikns@yandex.ru",
        long_description=open(os.path.join(
            directory, "README.md"), "r", encoding="utf8").read(),
        long_description_content_type="text/markdown",
        keywords=["powershell", "node-editor", "visual-programming"],
        classifiers=[],
        include_package_data=True,
        install_requires=[
            "numpy",
            "requests",
            "PyQt6>=6.4",
        ],
        extras_require={
            "test": ["pytest"],
        },
        entry_points={
            "console_scripts": [
                "nodeflow=nodeflow.editor.__main__:main",
            ],
        },
        zip_safe=False,
    )
