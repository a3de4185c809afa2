"""
NodeFlow - visual node-graph editor that compiles data-flow graphs into
PowerShell scripts.

Main modules:
- nodegraph - graph model, interaction state machine, palette, compiler
- editor - Qt front end (canvas, palette, properties, settings)
- log - logging facade
"""

__version__ = '0.1.0'

__all__ = [
    '__version__',
]
