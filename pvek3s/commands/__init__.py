from . import cluster, install

__all__ = ['cluster', 'install']
