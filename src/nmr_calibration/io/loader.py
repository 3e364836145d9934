from pathlib import Path

import h5py
import numpy as np

from nmr_calibration.core.types import CalibrationData


class CalibrationLoader:
    """Loader for calibration FID matrices stored in HDF5."""

    def __init__(self, dis_key: str = "disfids", gas_key: str = "gasfids"):
        self.dis_key = dis_key
        self.gas_key = gas_key

    def load(self, file_path: Path) -> CalibrationData:
        """
        Load dissolved and gas FIDs from an HDF5 file.

        Both datasets are (samples x acquisitions) complex arrays. A file-level
        or dataset-level "dwell_time" attribute (seconds) is picked up if present.

        Args:
            file_path: Path to the HDF5 file.

        Returns:
            CalibrationData with both matrices and the merged attributes.
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        with h5py.File(file_path, "r") as f:
            attrs = dict(f.attrs)
            matrices = {}
            for key in (self.dis_key, self.gas_key):
                if key not in f:
                    raise ValueError(
                        f"Dataset '{key}' not found in {file_path}. "
                        f"File keys: {list(f.keys())}"
                    )
                dataset = f[key]
                matrices[key] = np.asarray(dataset[()])
                attrs.update(dict(dataset.attrs))

        metadata = {k: _plain(v) for k, v in attrs.items()}
        dwell_time = metadata.get("dwell_time")

        return CalibrationData(
            disfids=matrices[self.dis_key],
            gasfids=matrices[self.gas_key],
            metadata=metadata,
            dwell_time=float(dwell_time) if dwell_time is not None else None,
        )


def _plain(value):
    # h5py hands back numpy scalars and bytes
    if isinstance(value, (bytes, np.bytes_)):
        return value.decode("utf-8")
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    return value
