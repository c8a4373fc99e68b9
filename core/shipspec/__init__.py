"""
shipspec - resumable graph workflows for planning and production-readiness analysis.

Core pieces:
- graph: state reducers, nodes, edges and the executor
- storage: checkpoint persistence (in-memory and file-backed)
- workflows: the planning, productionalize and spec graphs built on the engine
"""

__version__ = "0.1.0"
