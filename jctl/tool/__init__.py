"""Command line tool for jctl."""
