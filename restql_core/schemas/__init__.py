"""
RestQL schema definitions

Records of the served resources are plain dictionaries described by
the model descriptors, so this package only holds the schemas of the
service itself. It also contains the ``config`` module, but it's not
exported by default, since it's currently only used internally.
"""

from .errors import *
from .extra import *
