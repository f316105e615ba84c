"""Geometry helpers that do not depend on the solver."""

from .ellipse import ErrorEllipse, ellipse_axes, error_ellipse_from_covariance

__all__ = ["ErrorEllipse", "ellipse_axes", "error_ellipse_from_covariance"]
