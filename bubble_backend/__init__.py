"""
Backend package for the AI bubble predictions site.

This package provides a FastAPI application that collects "days until the
bubble pops" guesses and serves their running average, alongside the static
site it fronts.
"""
