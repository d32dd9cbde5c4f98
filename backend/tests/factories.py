"""Row builders for seeding the fake data store."""

SCHOOL_ID = "school-1"


def category(fake, id="cat-tuition", name="Tuition", fee_type="tuition", school_id=SCHOOL_ID):
    return fake.seed("fee_categories", {
        "id": id, "school_id": school_id, "name": name,
        "code": id.upper(), "fee_type": fee_type, "is_active": True,
    })[0]


def student(fake, id="stu-1", class_group_id="class-5", admission_date="2024-03-10",
            school_id=SCHOOL_ID, status="active"):
    return fake.seed("students", {
        "id": id, "school_id": school_id, "class_group_id": class_group_id,
        "admission_date": admission_date, "status": status,
    })[0]


def class_version(fake, amount, effective_from, effective_to=None, version_number=1,
                  fee_category_id="cat-tuition", class_group_id="class-5",
                  fee_cycle="monthly", is_active=True, school_id=SCHOOL_ID):
    return fake.seed("class_fee_versions", {
        "school_id": school_id, "class_group_id": class_group_id,
        "fee_category_id": fee_category_id, "fee_cycle": fee_cycle,
        "amount": amount, "version_number": version_number,
        "effective_from_date": effective_from, "effective_to_date": effective_to,
        "is_active": is_active,
    })[0]


def transport_version(fake, amount, effective_from, route_name="North", class_group_id="class-5",
                      fee_cycle="monthly", version_number=1, school_id=SCHOOL_ID):
    return fake.seed("transport_fee_versions", {
        "school_id": school_id, "class_group_id": class_group_id,
        "route_name": route_name, "fee_cycle": fee_cycle,
        "amount": amount, "version_number": version_number,
        "effective_from_date": effective_from, "effective_to_date": None,
        "is_active": True,
    })[0]


def optional_version(fake, amount, effective_from, fee_category_id, class_group_id=None,
                     fee_cycle="monthly", version_number=1, school_id=SCHOOL_ID):
    return fake.seed("optional_fee_versions", {
        "school_id": school_id, "class_group_id": class_group_id,
        "fee_category_id": fee_category_id, "fee_cycle": fee_cycle,
        "amount": amount, "version_number": version_number,
        "effective_from_date": effective_from, "effective_to_date": None,
        "is_active": True,
    })[0]


def override(fake, student_id="stu-1", fee_category_id="cat-tuition", is_full_free=False,
             custom_fee_amount=None, discount_amount=None, effective_from="2024-01-01",
             effective_to=None, created_at="2024-01-01T00:00:00+00:00", school_id=SCHOOL_ID):
    return fake.seed("student_fee_overrides", {
        "school_id": school_id, "student_id": student_id,
        "fee_category_id": fee_category_id, "is_full_free": is_full_free,
        "custom_fee_amount": custom_fee_amount, "discount_amount": discount_amount,
        "effective_from": effective_from, "effective_to": effective_to,
        "is_active": True, "created_at": created_at,
    })[0]


def scholarship(fake, scholarship_type, student_id="stu-1", applies_to="all",
                discount_percentage=None, discount_amount=None, fee_category_id=None,
                status="approved", effective_from="2024-01-01", effective_to=None,
                school_id=SCHOOL_ID):
    return fake.seed("scholarships", {
        "school_id": school_id, "student_id": student_id,
        "scholarship_type": scholarship_type, "applies_to": applies_to,
        "fee_category_id": fee_category_id,
        "discount_percentage": discount_percentage, "discount_amount": discount_amount,
        "status": status, "effective_from": effective_from, "effective_to": effective_to,
        "is_active": True,
    })[0]


def fee_profile(fake, student_id="stu-1", transport_enabled=True, transport_route=None,
                transport_fee_override=None, tuition_fee_cycle=None,
                transport_fee_cycle="monthly", effective_from="2024-01-01", school_id=SCHOOL_ID):
    return fake.seed("student_fee_profile", {
        "school_id": school_id, "student_id": student_id,
        "transport_enabled": transport_enabled, "transport_route": transport_route,
        "transport_fee_override": transport_fee_override,
        "tuition_fee_cycle": tuition_fee_cycle, "transport_fee_cycle": transport_fee_cycle,
        "effective_from": effective_from, "effective_to": None, "is_active": True,
    })[0]


def component(fake, year, month, fee_amount=1000, paid_amount=0, pending_amount=None,
              status="pending", due_date=None, student_id="stu-1", fee_type="class-fee",
              fee_category_id="cat-tuition", fee_name="Tuition", school_id=SCHOOL_ID):
    return fake.seed("monthly_fee_components", {
        "school_id": school_id, "student_id": student_id,
        "fee_category_id": fee_category_id, "fee_type": fee_type, "fee_name": fee_name,
        "fee_cycle": "monthly", "period_year": year, "period_month": month,
        "period_start": f"{year}-{month:02d}-01", "period_end": f"{year}-{month:02d}-28",
        "fee_amount": fee_amount, "paid_amount": paid_amount,
        "pending_amount": fee_amount - paid_amount if pending_amount is None else pending_amount,
        "status": status, "due_date": due_date or f"{year}-{month:02d}-15",
    })[0]


def components_for(fake, student_id="stu-1"):
    rows = [r for r in fake.rows("monthly_fee_components") if r["student_id"] == student_id]
    return sorted(rows, key=lambda r: (r["period_year"], r["period_month"], r["fee_type"]))
