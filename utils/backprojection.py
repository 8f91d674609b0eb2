"""
Histogram backprojection over the first channel of an image.

Standalone helper; the tracking pipeline does not call it.
"""

import cv2


def calc_hist_back_projection(image, channel=0, bins=16, value_range=(0, 180), blur_sigma=10.0):
    """
    Histogram the channel, min-max normalise to 0-255, smooth it with a 3x3
    Gaussian and back-project it onto the image.
    """
    ranges = [float(value_range[0]), float(value_range[1])]
    hist = cv2.calcHist([image], [channel], None, [bins], ranges, accumulate=False)
    cv2.normalize(hist, hist, 0, 255, cv2.NORM_MINMAX)
    hist = cv2.GaussianBlur(hist, (3, 3), blur_sigma, sigmaY=blur_sigma,
                            borderType=cv2.BORDER_REFLECT_101)
    return cv2.calcBackProject([image], [channel], hist, ranges, scale=1)
