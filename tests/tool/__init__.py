"""Tests for the jctl command line tool."""
