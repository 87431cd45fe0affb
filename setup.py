from setuptools import setup, find_packages

setup(
    name="moonwalk-lang",
    version="0.1.0",
    description="moonwalk - a tree-walking interpreter for a Lua-like scripting language",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="moonwalk Project",
    python_requires=">=3.9",
    packages=find_packages(),
    entry_points={
        "console_scripts": [
            "moonwalk=moonwalk.cli:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Topic :: Software Development :: Interpreters",
    ],
)
