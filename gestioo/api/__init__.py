"""Access to the Gestioo REST backend."""
