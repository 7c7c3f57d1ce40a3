"""Repository layer — patient CRUD over the local store handle."""

import dataclasses
from typing import Optional

from .connection import LocalStore
from .models import Patient


class PatientRepository:
    """Typed access to patient records. Store faults propagate unchanged."""

    def __init__(self, store: LocalStore):
        self.store = store

    # ── Writes ──────────────────────────────────────────────────

    def save(self, patient: Patient) -> Patient:
        """Insert or update ``patient``; returns a copy carrying its id.

        Raises ValidationFailed before the store is touched when a required
        field is empty or the date of birth lies in the future.
        """
        patient.validate()

        def mutation(conn) -> int:
            if patient.id is None:
                cursor = conn.execute(
                    "INSERT INTO patients (firstName, lastName, dateOfBirth, "
                    "medicalRecordNumber, notes) VALUES (?, ?, ?, ?, ?)",
                    patient.to_params(),
                )
                return cursor.lastrowid
            cursor = conn.execute(
                "UPDATE patients SET firstName = ?, lastName = ?, "
                "dateOfBirth = ?, medicalRecordNumber = ?, notes = ? "
                "WHERE id = ?",
                (*patient.to_params(), patient.id),
            )
            if cursor.rowcount == 0:
                # Deleted meanwhile; re-create it under the same id.
                conn.execute(
                    "INSERT INTO patients (id, firstName, lastName, "
                    "dateOfBirth, medicalRecordNumber, notes) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (patient.id, *patient.to_params()),
                )
            return patient.id

        patient_id = self.store.write(mutation)
        return dataclasses.replace(patient, id=patient_id)

    def delete(self, patient: Patient):
        if patient.id is None:
            return
        self.store.write(
            lambda conn: conn.execute(
                "DELETE FROM patients WHERE id = ?", (patient.id,)
            )
        )

    # ── Reads ───────────────────────────────────────────────────

    def load_all(self) -> list[Patient]:
        rows = self.store.read(
            lambda conn: conn.execute(
                "SELECT * FROM patients ORDER BY lastName, firstName"
            ).fetchall()
        )
        return [Patient.from_row(r) for r in rows]

    def fetch(self, patient_id: int) -> Optional[Patient]:
        row = self.store.read(
            lambda conn: conn.execute(
                "SELECT * FROM patients WHERE id = ?", (patient_id,)
            ).fetchone()
        )
        return Patient.from_row(row) if row else None

    def search(self, query: str,
               patients: Optional[list[Patient]] = None) -> list[Patient]:
        """Case-insensitive substring match on names and record number.

        Filters ``patients`` when given (an already-loaded list), otherwise
        the full record set. An empty query returns everything.
        """
        if patients is None:
            patients = self.load_all()
        needle = query.strip().lower()
        if not needle:
            return list(patients)
        return [
            p for p in patients
            if needle in p.first_name.lower()
            or needle in p.last_name.lower()
            or needle in p.medical_record_number.lower()
        ]
