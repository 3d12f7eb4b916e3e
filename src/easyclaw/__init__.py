"""EasyClaw: compiles user-written rules into agent policies, guards and skills."""

__version__ = "0.1.0"
