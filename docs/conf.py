# Configuration file for the Sphinx documentation builder.
project = 'PRIVCA'
copyright = '2026, PRIVCA'
author = 'PRIVCA'
release = '0.1.0'

extensions = []

templates_path = ['_templates']
exclude_patterns = ['_build', 'Thumbs.db', '.DS_Store']

html_theme = 'sphinx_rtd_theme'
html_static_path = ['_static']
