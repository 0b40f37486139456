"""
Programme - scheduling and baseline-variance engine for construction programmes.
"""

__version__ = "0.1.0"
