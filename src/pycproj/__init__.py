"""Scaffold, configure, build, run and format C/C++ CMake projects."""
