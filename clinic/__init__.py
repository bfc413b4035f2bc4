"""Django project package for the clinic booking backend."""
