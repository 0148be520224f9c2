[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "capnez"
version = "0.1.0"
description = "Generate Cap'n Proto schemas from annotated Python classes"
requires-python = ">=3.10"
dependencies = []
keywords = ["capnproto", "capnp", "schema", "code generation", "serialization"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Code Generators",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
capnez = "capnez.generator:main"
capnez-sparse-matrix = "capnez.sparse_matrix:main"

[tool.hatch.build.targets.wheel]
packages = ["capnez"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
