"""kiro-agents build engine.

Turns the template source tree into the local dev tree, the packaged
distribution and the kiro-protocols power bundle.
"""
