import setuptools

# Read the long description from README.md
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setuptools.setup(
    name="npyload",
    version="0.1.0",
    author="npyload contributors",
    description="A Python library for decoding arrays stored in the NumPy .npy binary format",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Topic :: Software Development :: Libraries",
        "Topic :: Scientific/Engineering",
    ],
    package_dir={"": "lib"},
    py_modules=["npyload"],
    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.15.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
