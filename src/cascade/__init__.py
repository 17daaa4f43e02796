"""Cascade - build, package and release orchestration for the BLLVM repositories."""

__version__ = "0.2.0"
