"""Iceforge build monitor: Rich rendering of plans, progress and reports.

Modules
-------
renderer
    ``BuildRenderer`` turns ``PlanEntry`` lists and ``BuildReport`` models
    into Rich renderables, and prints per-node progress lines while a build
    runs.
"""
