"""
A simple configuration helper built on top of ConfigObj that allows configuration files to be
layered - shipped defaults / os-specific / user / explicit file, with a schema to validate the types of the
config data and supply defaults.

settings provides typed views of the validated configuration.
"""
