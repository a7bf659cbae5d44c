"""Top-level package for mvcem."""

import mvcem.tl

__maintainer__ = ", ".join(["Anna C. Schaar", "David S. Fischer"])
__author__ = ", ".join(["Anna C. Schaar", "David S. Fischer"])
__email__ = ", ".join(["anna.schaar@helmholtz-muenchen.de", "david.fischer@helmholtz-muenchen.de"])
__version__ = "0.1.0"
