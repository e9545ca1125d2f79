"""Case Engine - Services"""
