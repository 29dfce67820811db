"""WingsEd study-abroad counselling backend.

The package exposes the FastAPI application (`wingsed.main:app`) together
with the models, repositories and services it is built from. Individual
modules contain the concrete implementations and documentation.
"""
