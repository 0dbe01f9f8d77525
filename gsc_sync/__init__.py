"""gsc-sync: Search Console keyword and traffic sync engine"""

__version__ = "0.1.0"
