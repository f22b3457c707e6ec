"""Shared pytest fixtures for treewatch tests."""
