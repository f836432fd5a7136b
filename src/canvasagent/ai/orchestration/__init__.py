"""Command queueing, reasoning, execution and the ReAct loop.

Import concrete classes from their submodules; this package stays import-light
so the tool layer can depend on :mod:`.types` without cycles.
"""
