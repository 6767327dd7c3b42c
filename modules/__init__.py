"""
Modules package for Interval Quiz Bot

This package contains core business logic modules.
"""
# Импорты не выносятся сюда: storage и modules ссылаются друг на друга
