"""Wavelength to RGB conversion.

Maps a single wavelength to a display colour using the usual piecewise-linear
visible-spectrum table with intensity fall-off near the edges of vision and a
gamma of 0.8. Wavelengths outside [380, 780] nm map to black.
"""

import taichi as ti
import taichi.math as tm

from foxel.core.photon import WAVELENGTH_MAX, WAVELENGTH_MIN, vec3

SPECTRUM_GAMMA = 0.8


@ti.func
def spectral_rgb(wavelength: ti.f32) -> vec3:
    """Convert a wavelength in nanometres to a linear RGB triple.

    Args:
        wavelength: Wavelength in nanometres.

    Returns:
        RGB colour with components in [0, 1]; black outside the visible range.
    """
    r = 0.0
    g = 0.0
    b = 0.0

    if WAVELENGTH_MIN <= wavelength < 440.0:
        attenuation = 0.3 + 0.7 * (wavelength - WAVELENGTH_MIN) / (440.0 - WAVELENGTH_MIN)
        r = -(wavelength - 440.0) / (440.0 - WAVELENGTH_MIN) * attenuation
        b = attenuation
    elif 440.0 <= wavelength < 490.0:
        g = (wavelength - 440.0) / (490.0 - 440.0)
        b = 1.0
    elif 490.0 <= wavelength < 510.0:
        g = 1.0
        b = -(wavelength - 510.0) / (510.0 - 490.0)
    elif 510.0 <= wavelength < 580.0:
        r = (wavelength - 510.0) / (580.0 - 510.0)
        g = 1.0
    elif 580.0 <= wavelength < 645.0:
        r = 1.0
        g = -(wavelength - 645.0) / (645.0 - 580.0)
    elif 645.0 <= wavelength <= WAVELENGTH_MAX:
        r = 0.3 + 0.7 * (WAVELENGTH_MAX - wavelength) / (WAVELENGTH_MAX - 645.0)

    return vec3(r, g, b) ** SPECTRUM_GAMMA


@ti.kernel
def _spectral_rgb_kernel(wavelength: ti.f32) -> vec3:
    return spectral_rgb(wavelength)


def wavelength_to_rgb(wavelength: float) -> tuple[float, float, float]:
    """Host-side wrapper around spectral_rgb.

    Args:
        wavelength: Wavelength in nanometres.

    Returns:
        Tuple of (R, G, B).
    """
    color = _spectral_rgb_kernel(wavelength)
    return (float(color[0]), float(color[1]), float(color[2]))


# Number of colour bands around the sky pattern
CELESTIAL_BANDS = 6


@ti.func
def celestial_wavelength(direction: vec3) -> ti.f32:
    """Wavelength of the procedural sky in a given direction.

    The sky is painted with rainbow bands in azimuth whose order flips in
    alternate latitude rings, giving a pattern whose distortion shows the
    lensing clearly.

    Args:
        direction: Sky direction (any non-zero length).

    Returns:
        Wavelength in nanometres within [380, 780].
    """
    d = tm.normalize(direction)
    azimuth = ti.atan2(d.z, d.x) / (2.0 * tm.pi) + 0.5
    elevation = ti.acos(tm.clamp(d.y, -1.0, 1.0)) / tm.pi

    band = tm.fract(azimuth * CELESTIAL_BANDS)
    if ti.cast(ti.floor(elevation * CELESTIAL_BANDS), ti.i32) % 2 == 1:
        band = 1.0 - band

    return WAVELENGTH_MIN + (WAVELENGTH_MAX - WAVELENGTH_MIN) * band
