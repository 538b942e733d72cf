"""
Flow Runner

Executes visual API-testing workflows: a directed graph of request,
extract, condition, loop, parallel and scripting nodes run against a
shared variable context.
"""

__version__ = '1.0.0'
