from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from .. import storage
from ..db import get_db
from ..models import User
from ..schemas import StudentCreate, StudentOut, StudentUpdate
from .auth import get_current_teacher

router = APIRouter(prefix="/api/students", tags=["students"])


@router.get("", response_model=List[StudentOut])
def list_students(teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	return storage.list_students(db, teacher.id)


@router.post("", response_model=StudentOut, status_code=201)
def create_student(req: StudentCreate, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	data = req.model_dump()
	data["cefr_level"] = req.cefr_level.value
	return storage.create_student(db, teacher.id, data)


@router.get("/{student_id}", response_model=StudentOut)
def get_student(student_id: int, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	return storage.get_owned_student(db, teacher.id, student_id)


@router.put("/{student_id}", response_model=StudentOut)
def update_student(student_id: int, req: StudentUpdate, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	student = storage.get_owned_student(db, teacher.id, student_id)
	changes = req.model_dump(exclude_unset=True)
	for required in ("name", "cefr_level"):
		if changes.get(required) is None:
			changes.pop(required, None)
	if req.cefr_level is not None:
		changes["cefr_level"] = req.cefr_level.value
	return storage.update_student(db, student, changes)


@router.delete("/{student_id}", status_code=204)
def delete_student(student_id: int, teacher: User = Depends(get_current_teacher), db: Session = Depends(get_db)):
	student = storage.get_owned_student(db, teacher.id, student_id)
	storage.delete_student(db, student)
	return Response(status_code=204)

