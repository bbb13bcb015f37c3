"""infragraph: compose declarative infrastructure modules and hand them to Pulumi."""

__version__ = "0.1.0"
