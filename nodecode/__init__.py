"""
NodeCode — collaborative node canvas core.

Packages
--------
    nodecode.core      graph model, ports, reducer, traversal
    nodecode.compiler  preview artifact compiler
    nodecode.sync      snapshot merge, debounced write-back, presence
    nodecode.agent     LLM tool-call runner
    nodecode.server    FastAPI + Socket.IO host and runtime bridge
"""
