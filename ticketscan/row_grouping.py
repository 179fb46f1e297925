"""
Row grouping shared by grid segmentation and full-line OCR.

Both paths must agree on how many rows a ticket has, so there is exactly one
implementation: sort by vertical center (horizontal position breaks ties),
then greedily attach each observation to the last open row while its
vertical-center distance to the most recently added member stays below
tolerance. Chaining to the last member lets a slightly tilted row stay whole.
"""

from typing import Iterable, List

from ticketscan.models import TextObservation


def _reading_order_key(observation: TextObservation):
    return (observation.box.mid_y, observation.box.min_x, observation.text)


def _horizontal_key(observation: TextObservation):
    return (observation.box.min_x, observation.box.mid_y, observation.text)


def group_into_rows(observations: Iterable[TextObservation], tolerance: float) -> List[List[TextObservation]]:
    """
    Group observations into rows, top to bottom, each row left to right.

    The result depends only on positions, never on input order.

    Args:
        observations: Recognized text with normalized boxes
        tolerance: Maximum vertical-center delta (normalized units) to the
            last observation added to the current row

    Returns:
        List of rows
    """
    rows: List[List[TextObservation]] = []
    for observation in sorted(observations, key=_reading_order_key):
        if rows and abs(observation.box.mid_y - rows[-1][-1].box.mid_y) < tolerance:
            rows[-1].append(observation)
        else:
            rows.append([observation])
    return [sorted(row, key=_horizontal_key) for row in rows]
